class StackGuard:
    """Restores the VM stack to the depth it had when the guard was entered.

    Usage::

        with StackGuard(api, L):
            api.pushglobaltable(L)
            ...

    Everything pushed inside the block is discarded on exit, whether the
    block returns normally, returns early or raises. Exceptions propagate.
    """

    __slots__ = ("api", "L", "depth")

    def __init__(self, api, L):
        self.api = api
        self.L = L
        self.depth = None

    def __enter__(self):
        if self.L:
            self.depth = self.api.gettop(self.L)
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.L and self.depth is not None:
            self.api.settop(self.L, self.depth)
        return False

    def __repr__(self):
        return f"StackGuard(L={self.L!r}, depth={self.depth!r})"
