from dataclasses import dataclass

__all__ = ("RateParams",)


@dataclass(frozen=True, slots=True)
class RateParams:
    """
    Bank-account parameters:

      * accrual_rate — credit accrued per second (e.g. bytes/sec)
      * max_balance  — ceiling on saved-up credit (should be >= 0)
      * min_balance  — floor, i.e. maximum allowed debt (should be <= 0)

    Bounds are not checked: min_balance <= max_balance is up to the caller.
    """

    accrual_rate: float
    max_balance: float
    min_balance: float = 0.0

    @property
    def burst(self) -> float:
        return self.max_balance - self.min_balance
