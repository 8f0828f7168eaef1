"""Indian equity intraday cost model.

Costs per round trip:
- brokerage: min(flat, pct * turnover) on each order
- exchange transaction charges: both legs, NSE/BSE rate
- STT (securities transaction tax): SELL leg only
- SEBI turnover fee and IPFT: both legs
- stamp duty: BUY leg only
- GST: on brokerage + transaction charges + SEBI + IPFT (not on STT/stamp duty)
"""

from __future__ import annotations

from .config import CostConfig
from .types import TradeCosts


class IntradayCostModel:
    def __init__(self, cfg: CostConfig = CostConfig()):
        self.cfg = cfg

    def brokerage(self, turnover: float) -> float:
        """Single-order brokerage."""
        return min(float(self.cfg.brokerage_flat), float(turnover) * float(self.cfg.brokerage_pct))

    def transaction_rate(self) -> float:
        return float(self.cfg.transaction_nse if self.cfg.exchange.upper() == "NSE" else self.cfg.transaction_bse)

    def round_trip(self, buy_price: float, sell_price: float, quantity: int) -> TradeCosts:
        """Costs for one buy order and one sell order of ``quantity`` shares.

        For a short, ``buy_price`` is the cover price and ``sell_price`` the entry.
        """
        cfg = self.cfg
        buy_turnover = float(buy_price) * quantity
        sell_turnover = float(sell_price) * quantity
        turnover = buy_turnover + sell_turnover

        brokerage = self.brokerage(buy_turnover) + self.brokerage(sell_turnover)
        transaction = turnover * self.transaction_rate()
        stt = sell_turnover * cfg.stt_sell
        sebi = turnover * cfg.sebi
        stamp = buy_turnover * cfg.stamp_duty_buy
        ipft = turnover * cfg.ipft
        gst = (brokerage + transaction + sebi + ipft) * cfg.gst

        parts = dict(
            brokerage=round(brokerage, 2),
            stt=round(stt, 2),
            transaction_charges=round(transaction, 4),
            gst=round(gst, 2),
            sebi_charges=round(sebi, 4),
            stamp_duty=round(stamp, 4),
            ipft_charges=round(ipft, 4),
        )
        # total is the sum of the rounded components
        return TradeCosts(total_cost=round(sum(parts.values()), 2), **parts)
