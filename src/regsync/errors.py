class RegsyncError(Exception):
    pass


class ConfigError(RegsyncError):
    pass


class ClientError(RegsyncError):
    """The Docker client cannot be created or does not answer."""


class CommandError(RegsyncError):
    """A docker invocation exited with an error.

    Carries ``(exit_code, std_out, std_err)`` as its args.
    """

    def __init__(self, exit_code, std_out, std_err):
        super().__init__(exit_code, std_out, std_err)
        self.exit_code = exit_code
        self.std_out = std_out
        self.std_err = std_err

    def __str__(self):
        msg = (self.std_err or self.std_out or '').strip()
        return 'exit code ' + str(self.exit_code) + (': ' + msg if msg else '')


class AuthError(RegsyncError):
    pass


class RepositoryError(RegsyncError):
    pass


class SyncError(RegsyncError):
    pass


class PullError(SyncError):
    pass


class TagError(SyncError):
    pass


class PushError(SyncError):
    pass
