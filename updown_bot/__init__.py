"""Signal engine for 15-minute crypto up/down binary markets.

Turns a stream of asset prices into per-minute feature vectors, scores
them with a pre-trained logistic regression model, and labels trades by
volatility regime for post-hoc analysis.

Usage::

    python3 -m updown_bot --prices prices.csv --output signals.csv
"""
