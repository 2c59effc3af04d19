"""Report OpenTelemetry span exceptions and sessions to Bugsnag."""

__version__ = "0.1.0"
