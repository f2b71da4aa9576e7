SERVICE_NAME = "trace-dock"
__version__ = "0.1.0"
