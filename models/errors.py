class FormatError(ValueError):
    """Malformed market-data input: bad header, bad file name, or no usable rows."""
