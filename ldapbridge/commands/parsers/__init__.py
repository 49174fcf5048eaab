from . import auth, test

ENTRY_PARSERS = [
    auth,
    test,
]
