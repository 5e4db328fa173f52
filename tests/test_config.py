import logging

import pytest

from oracle_exporter.config import Bech32Prefixes, Config, DenomOverrides, parse_listen_address
from oracle_exporter.errors import ConfigError
from oracle_exporter.main import build_parser, load_config, setup_logging

CONFIG_YAML = """
settings:
  port: 9400
  log_level: DEBUG
node:
  url: http://node:1317
  query_timeout: 3
denom:
  symbol: umee
  exponent: 6
bech32:
  prefix: umee
  validator: umeeoper
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(CONFIG_YAML)
    return path


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv('CONFIG_PATH', raising=False)

    config = Config.load()

    assert config.settings.port == 9300
    assert config.settings.node_url == 'http://127.0.0.1:1317'
    assert config.denom == DenomOverrides()
    assert config.prefixes.validator == 'umeevaloper'


def test_file_values(config_file):
    config = Config.from_file(str(config_file))

    assert config.settings.port == 9400
    assert config.settings.log_level == 'debug'
    assert config.settings.query_timeout == 3.0
    assert config.denom == DenomOverrides(symbol='umee', exponent=6)
    assert config.prefixes.validator == 'umeeoper'
    assert config.prefixes.account == 'umee'


def test_config_path_from_environment(monkeypatch, config_file):
    monkeypatch.setenv('CONFIG_PATH', str(config_file))

    assert Config.load().settings.port == 9400


def test_flags_override_file(config_file):
    config = load_config([
        '--config', str(config_file),
        '--listen-address', ':9500',
        '--denom-coefficient', '1000',
        '--bech-prefix', 'cosmos',
        '--json',
    ])

    assert config.settings.listen_address == '0.0.0.0'
    assert config.settings.port == 9500
    assert config.settings.json_logs is True
    # both scaling values now set; the resolver rejects this combination
    assert config.denom == DenomOverrides(symbol='umee', coefficient=1000.0, exponent=6)
    assert config.prefixes.account == 'cosmos'
    assert config.prefixes.validator == 'umeeoper'


def test_unset_flags_keep_file_values(config_file):
    args = build_parser().parse_args(['--config', str(config_file)])

    config = Config.load(args.config).apply_args(args)

    assert config.settings.node_url == 'http://node:1317'
    assert config.denom.exponent == 6


@pytest.mark.parametrize('denom', [
    {'symbol': 'umee', 'coefficient': 'many'},
    {'symbol': 'umee', 'coefficient': 0},
    {'symbol': 'umee', 'exponent': -1},
    {'symbol': 'umee', 'exponent': 'six'},
])
def test_invalid_scaling_values(denom):
    with pytest.raises(ConfigError):
        Config({'denom': denom})


def test_invalid_log_level():
    with pytest.raises(ConfigError):
        Config({'settings': {'log_level': 'verbose'}})


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        Config.from_file(str(tmp_path / 'absent.yaml'))


def test_listen_address_parsing():
    assert parse_listen_address(':9300') == ('0.0.0.0', 9300)
    assert parse_listen_address('127.0.0.1:9301') == ('127.0.0.1', 9301)
    with pytest.raises(ConfigError):
        parse_listen_address('9300')


def test_prefix_derivation():
    prefixes = Bech32Prefixes.from_base('umee')

    assert prefixes.account_pubkey == 'umeepub'
    assert prefixes.validator_pubkey == 'umeevaloperpub'
    assert prefixes.consensus_node == 'umeevalcons'
    assert prefixes.consensus_node_pubkey == 'umeevalconspub'
    with pytest.raises(ConfigError):
        Bech32Prefixes.from_base('umee', wallet='x')


def test_setup_logging_json_handler():
    root = logging.getLogger()
    saved = root.handlers[:]
    saved_level = root.level
    try:
        setup_logging('debug', json_logs=True)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert 'JsonFormatter' in type(root.handlers[0].formatter).__name__
    finally:
        root.handlers = saved
        root.setLevel(saved_level)


@pytest.mark.parametrize('data', [
    {'settings': {'port': 'http'}},
    {'node': {'query_timeout': 'soon'}},
    {'node': {'limit': [100]}},
    {'settings': {'json_logs': 'maybe'}},
])
def test_malformed_settings_are_config_errors(data):
    with pytest.raises(ConfigError):
        Config(data)


@pytest.mark.parametrize('value, expected', [
    ('false', False),
    ('no', False),
    ('true', True),
    ('on', True),
    (True, True),
    (0, False),
])
def test_json_logs_accepts_yaml_style_strings(value, expected):
    assert Config({'settings': {'json_logs': value}}).settings.json_logs is expected


def test_setup_logging_uses_current_json_formatter():
    root = logging.getLogger()
    saved = root.handlers[:]
    try:
        setup_logging(json_logs=True)
        assert type(root.handlers[0].formatter).__module__ == 'pythonjsonlogger.json'
    finally:
        root.handlers = saved
