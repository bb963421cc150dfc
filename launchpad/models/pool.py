"""
Pool tier and liquidity distribution models
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class PoolTierConfig:
    """Static pool settings selected by launch tier"""
    name: str
    step_bps: int            # price distance between adjacent bins
    base_fee_bps: int
    activation_delay: int    # seconds before trading opens (anti-sniper)
    anti_sniper: bool
    launch_fee: str          # native units, kept as text to avoid float drift
    version: str

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'PoolTierConfig':
        return cls(**data)


@dataclass(frozen=True)
class BinAmount:
    bin_id: int
    base_amount: int
    quote_amount: int

    @property
    def total(self) -> int:
        return self.base_amount + self.quote_amount


@dataclass(frozen=True)
class BinDistribution:
    """Per-bin liquidity, ordered by bin id"""
    active_bin: int
    bins: Tuple[BinAmount, ...]

    @property
    def total_base(self) -> int:
        return sum(b.base_amount for b in self.bins)

    @property
    def total_quote(self) -> int:
        return sum(b.quote_amount for b in self.bins)

    @property
    def total(self) -> int:
        return self.total_base + self.total_quote

    @property
    def bin_ids(self) -> List[int]:
        return [b.bin_id for b in self.bins]

    def to_dict(self) -> Dict:
        # Amounts as strings - base units can exceed what JSON readers handle as numbers
        return {
            'active_bin': self.active_bin,
            'bins': [[b.bin_id, str(b.base_amount), str(b.quote_amount)] for b in self.bins],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'BinDistribution':
        return cls(
            active_bin=int(data['active_bin']),
            bins=tuple(BinAmount(int(b), int(base), int(quote)) for b, base, quote in data['bins']),
        )
