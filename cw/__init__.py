"""Swiss army knife to query CloudWatch logs from the CLI."""

__version__ = "0.3.0"
