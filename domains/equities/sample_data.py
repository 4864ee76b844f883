"""
Offline loss-making sample.

A small, static snapshot of loss-making companies in the index provider's
record format. Served only for negative-earnings screens when the live tier
is unreachable or empty; values are illustrative and not refreshed.
"""

LOSS_MAKING_SAMPLE = [
    {
        "symbol": "IDEA",
        "identifier": "IDEAEQN",
        "lastPrice": 7.85,
        "change": -0.12,
        "pChange": -1.51,
        "open": 7.98,
        "dayHigh": 8.02,
        "dayLow": 7.8,
        "previousClose": 7.97,
        "yearHigh": 19.18,
        "yearLow": 6.6,
        "totalTradedVolume": 412345678,
        "nearWKH": 59.07,
        "nearWKL": -18.94,
        "eps": -4.25,
        "meta": {"companyName": "Vodafone Idea Limited", "industry": "Telecom Services"},
    },
    {
        "symbol": "PAYTM",
        "identifier": "PAYTMEQN",
        "lastPrice": 865.4,
        "change": 12.3,
        "pChange": 1.44,
        "open": 853.0,
        "dayHigh": 871.9,
        "dayLow": 850.15,
        "previousClose": 853.1,
        "yearHigh": 1062.95,
        "yearLow": 310.0,
        "totalTradedVolume": 3456789,
        "nearWKH": 18.58,
        "nearWKL": -179.16,
        "eps": -10.35,
        "meta": {"companyName": "One 97 Communications Limited", "industry": "Financial Technology"},
    },
    {
        "symbol": "OLAELEC",
        "identifier": "OLAELECEQN",
        "lastPrice": 52.6,
        "change": -1.05,
        "pChange": -1.96,
        "open": 53.7,
        "dayHigh": 54.1,
        "dayLow": 52.2,
        "previousClose": 53.65,
        "yearHigh": 157.4,
        "yearLow": 39.76,
        "totalTradedVolume": 28765432,
        "nearWKH": 66.58,
        "nearWKL": -32.29,
        "eps": -5.12,
        "meta": {"companyName": "Ola Electric Mobility Limited", "industry": "Automobiles - Two Wheelers"},
    },
    {
        "symbol": "SWIGGY",
        "identifier": "SWIGGYEQN",
        "lastPrice": 402.75,
        "change": 4.6,
        "pChange": 1.16,
        "open": 398.5,
        "dayHigh": 405.8,
        "dayLow": 396.1,
        "previousClose": 398.15,
        "yearHigh": 617.0,
        "yearLow": 297.0,
        "totalTradedVolume": 6543210,
        "nearWKH": 34.72,
        "nearWKL": -35.61,
        "eps": -13.58,
        "meta": {"companyName": "Swiggy Limited", "industry": "E-Retail / E-Commerce"},
    },
    {
        "symbol": "BRAINBEES",
        "identifier": "BRAINBEESEQN",
        "lastPrice": 398.2,
        "change": -6.45,
        "pChange": -1.59,
        "open": 404.0,
        "dayHigh": 406.3,
        "dayLow": 395.5,
        "previousClose": 404.65,
        "yearHigh": 734.3,
        "yearLow": 325.0,
        "totalTradedVolume": 987654,
        "nearWKH": 45.77,
        "nearWKL": -22.52,
        "eps": -5.6,
        "meta": {"companyName": "Brainbees Solutions Limited", "industry": "E-Retail / E-Commerce"},
    },
    {
        "symbol": "IGARASHI",
        "identifier": "IGARASHIEQN",
        "lastPrice": 512.3,
        "change": 3.2,
        "pChange": 0.63,
        "open": 509.0,
        "dayHigh": 515.0,
        "dayLow": 505.25,
        "previousClose": 509.1,
        "yearHigh": 760.0,
        "yearLow": 430.0,
        "totalTradedVolume": 45678,
        "nearWKH": 32.59,
        "nearWKL": -19.14,
        "eps": -1.08,
        "meta": {"companyName": "Igarashi Motors India Limited", "industry": "Auto Components"},
    },
]
