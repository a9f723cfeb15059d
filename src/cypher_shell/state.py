class AppState:
    """Process-wide flags shared between the CLI layer and the shell."""

    def __init__(self):
        # Set by `--debug`; enables tracebacks and DEBUG logging.
        self.verbose_mode: bool = False


APP_STATE = AppState()
