from __future__ import annotations

from typing import Any


class AppError(RuntimeError):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__}


class ConfigurationError(AppError):
    status_code = 422


class ValidationError(AppError):
    status_code = 422


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class DeviceHasChildrenError(ConflictError):
    def __init__(self, *, device_id: int, child_count: int):
        self.device_id = device_id
        self.child_count = child_count
        super().__init__(
            f"Device {device_id} has {child_count} child device(s); delete or move them first"
        )

    def to_detail(self) -> dict[str, Any]:
        return {**super().to_detail(), "child_count": self.child_count}


class StaleHierarchyError(ConflictError):
    pass


class HierarchyViolation(AppError):
    status_code = 422


class CycleError(AppError):
    status_code = 422


class ProvisioningStepError(AppError):
    status_code = 502

    def __init__(self, *, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"IoT provisioning failed at step '{step}': {cause}")

    def to_detail(self) -> dict[str, Any]:
        return {**super().to_detail(), "step": self.step}


class DeprovisioningPartialFailure(AppError):
    status_code = 502

    def __init__(self, *, failed_steps: list[tuple[str, str]]):
        self.failed_steps = failed_steps
        summary = ", ".join(f"{step}: {error}" for step, error in failed_steps)
        super().__init__(f"IoT deprovisioning incomplete ({summary})")

    def to_detail(self) -> dict[str, Any]:
        return {
            **super().to_detail(),
            "failed_steps": [{"step": step, "error": error} for step, error in self.failed_steps],
        }


class CredentialVaultError(AppError):
    status_code = 500
