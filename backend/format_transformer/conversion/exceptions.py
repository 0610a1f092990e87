"""Errors raised by the converters. The worker turns all of them into a Failure result."""


class ConversionError(Exception):
    """Base class for conversion errors."""

    def __init__(self, message, tool=None, output=None, error_type=None):
        self.message = message
        self.tool = tool
        self.output = output
        self.error_type = error_type
        super().__init__(self.message)


class DependencyMissingError(ConversionError):
    """A required external tool is not installed or cannot be found."""


class ToolLaunchError(DependencyMissingError):
    """The tool's executable exists on paper but the OS refused to start it."""

    def __init__(self, message, tool=None, os_error=None):
        super().__init__(message, tool=tool, error_type="launch_failed")
        self.os_error = os_error


class InvalidInputError(ConversionError):
    """Option data is malformed or empty."""


class ToolExecutionError(ConversionError):
    """The tool ran but exited non-zero or produced no output."""

    def __init__(self, message, tool=None, output=None, returncode=None):
        super().__init__(message, tool=tool, output=output, error_type="tool_failed")
        self.returncode = returncode


class DocumentConversionError(ConversionError):
    """Both document strategies failed."""

    def __init__(self, message, cli_error=None, library_error=None):
        super().__init__(message, tool="libreoffice", error_type="document_failed")
        self.cli_error = cli_error
        self.library_error = library_error
