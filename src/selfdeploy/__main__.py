"""Allow ``python -m selfdeploy``."""

from selfdeploy.main import run

if __name__ == "__main__":
    run()
