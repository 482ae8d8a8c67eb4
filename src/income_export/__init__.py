"""
Income Export - Binance USD-M futures income history to CSV.

Walks the paginated income feed for every configured account and writes a
raw, a daily consolidated and a spreadsheet-friendly report per account.
"""

__version__ = "1.0.0"
