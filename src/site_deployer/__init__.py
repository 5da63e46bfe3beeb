"""site-deployer: build a static site and ship it to an FTP host."""

__version__ = "0.1.0"
