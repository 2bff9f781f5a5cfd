"""SignPay: signed merchant order API."""
