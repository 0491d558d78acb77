from importlib.metadata import PackageNotFoundError, version

from dotenv import load_dotenv
load_dotenv(".env")
from gamerlookup.server import GamerLookupServer

try:
    __version__ = version("gamer-lookup")
except PackageNotFoundError:
    __version__ = "dev"

server = GamerLookupServer()

if __name__ == "__main__":
    server.run(__version__)
