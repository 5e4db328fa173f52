from oracle_exporter.main import main

if __name__ == "__main__":
    main()
