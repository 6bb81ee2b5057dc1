"""invoicer - turns tagged worklogs into one invoice per recipient."""

__version__ = "0.1.0"
