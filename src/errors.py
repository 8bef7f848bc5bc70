"""
Typed errors raised by the analysis engine

Every error knows its taxonomy token so it can be reported inside a result
payload instead of escaping as an unstructured fault.
"""


class AnalysisError(Exception):
    """Base class for all analysis engine errors"""

    kind = 'AnalysisError'

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'type': self.kind, 'message': self.message}


class InputTooLarge(AnalysisError):
    """Script text or container bytes exceed the configured ceiling"""

    kind = 'InputTooLarge'

    def __init__(self, size, limit, what='Input'):
        super().__init__(f'{what} size {size} exceeds maximum of {limit} bytes')
        self.size = size
        self.limit = limit

    def to_dict(self):
        data = super().to_dict()
        data['size'] = self.size
        data['limit'] = self.limit
        return data


class MalformedContainer(AnalysisError):
    """Package bytes are not a readable CRX or zip container"""

    kind = 'MalformedContainer'


class ParseFailure(AnalysisError):
    """Script text could not be parsed into a syntax tree"""

    kind = 'ParseFailure'


class InvalidManifest(AnalysisError):
    """Manifest input is not a key/value document"""

    kind = 'InvalidManifest'
