class InjectorError(Exception):
    pass


class ConfigError(InjectorError):
    pass


class InvalidCertificateError(InjectorError):
    pass


class FetchError(InjectorError):
    pass


class NotFoundError(InjectorError):
    pass


class AlreadyExistsError(InjectorError):
    pass


class DecodeError(InjectorError):
    pass


class UnknownBundleError(DecodeError):
    pass


class SyncError(InjectorError):
    pass
