class ProvisioningError(Exception):
    """
    A provisioning step failed on a host.

    `step` names the step that failed (e.g. "create_disk"), so the
    per-host outcome and the step failure metric can report it.
    """

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step
        self.message = message

    def __str__(self) -> str:
        return self.message
