from dataclasses import dataclass


@dataclass(frozen=True)
class GasEstimate:
    call_gas_limit: int
    pre_verification_gas: int
    verification_gas_limit: int

    def to_json(self) -> dict[str, str]:
        return {
            "callGasLimit": hex(self.call_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "verificationGasLimit": hex(self.verification_gas_limit),
        }


@dataclass(frozen=True)
class FeeEstimate:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def to_json(self) -> dict[str, str]:
        return {
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
        }
