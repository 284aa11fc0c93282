"""
定點數價格型別

價格一律以整數 raw 值保存，固定 8 位小數（與 Chainlink 價格格式相同）。
所有比較與儲存都用整數，避免浮點數誤差。
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

PRICE_DECIMALS = 8
_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMALS)


@dataclass(frozen=True, order=True)
class FixedPoint:
    """8 位小數的定點數，raw = 實際數值 * 10^8"""
    raw: int

    def __post_init__(self):
        if isinstance(self.raw, bool) or not isinstance(self.raw, int):
            raise TypeError(f"FixedPoint raw value must be int, got {type(self.raw).__name__}")

    @classmethod
    def from_decimal(cls, value: Union[str, Decimal, int]) -> "FixedPoint":
        """
        從十進位字串 / Decimal 建立定點數

        超過 8 位的小數以四捨五入處理（ROUND_HALF_UP）

        範例：
            FixedPoint.from_decimal("600.00") -> FixedPoint(raw=60000000000)

        異常：
            ValueError: 無法解析的數值
        """
        if isinstance(value, float):
            raise TypeError("FixedPoint does not accept float input, pass a string or Decimal")
        try:
            dec = Decimal(value)
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Cannot parse {value!r} as a decimal price") from e
        if not dec.is_finite():
            raise ValueError(f"Price must be finite, got {value!r}")

        # 整數位數過多時 quantize 會超出 Decimal 精度
        try:
            quantized = dec.quantize(_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError(f"Price {value!r} exceeds supported precision") from e
        return cls(int(quantized.scaleb(PRICE_DECIMALS)))

    def to_decimal(self) -> Decimal:
        return Decimal(self.raw).scaleb(-PRICE_DECIMALS)

    def __str__(self) -> str:
        return f"{self.to_decimal():.{PRICE_DECIMALS}f}"
