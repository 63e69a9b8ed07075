from pg_fanout.cli.main import run

if __name__ == "__main__":
    run()
