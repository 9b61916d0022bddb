class VacancyWatchError(Exception):
    pass


class ConfigurationError(VacancyWatchError):
    """Missing credential or malformed input at startup. Fatal."""


class FetchError(VacancyWatchError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        super().__init__(f"Error fetching url {url}" + (f": {reason}" if reason else ""))


class SubprocessError(VacancyWatchError):
    def __init__(self, returncode, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Availability checker failed (exit {returncode}): {stderr.strip()}")


class DeliveryError(VacancyWatchError):
    pass


class LedgerReadError(VacancyWatchError):
    pass


class LedgerWriteError(VacancyWatchError):
    pass
