"""
Basic usage: validate a few Strudel snippets in an isolated worker.
"""

import logging

from strudel_validator import ValidatorProcess

logging.basicConfig(level=logging.INFO)

SNIPPETS = [
    's("bd sd")',
    'note("<c e g> [a b]").sound("piano").fast(2)',
    's("bd [sd hh")',
    'stack(s("bd"), s("hh*4")',
]

with ValidatorProcess() as validator:
    for code in SNIPPETS:
        result = validator.validate(code)
        if result.valid:
            print(f"OK      {code}")
        else:
            print(f"INVALID {code}  ({result.error} at {result.line}:{result.column})")
