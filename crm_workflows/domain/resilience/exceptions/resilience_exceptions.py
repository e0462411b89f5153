class ResilienceException(Exception):
    pass


class CircuitOpenException(ResilienceException):
    def __init__(self, circuit_name: str, retry_after_seconds: float):
        self.circuit_name = circuit_name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit '{circuit_name}' is OPEN; calls are rejected for another "
            f"{retry_after_seconds:.0f} seconds."
        )
