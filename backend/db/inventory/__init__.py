"""
Stock ledger (multi-store).

Models:
- Movement (append-only signed quantity events per item per store)
- Transfer / TransferItem (store-to-store moves, produce paired movements)
- StockCount / StockEntry (physical counts, reconciled into adjustments)

Current stock is never stored: it is the sum of movements.
"""
