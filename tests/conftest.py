import builtins
import pathlib
import pytest

_real_open = builtins.open


class _FaultyFile:
    """Real file handle whose named method raises OSError"""

    def __init__(self, handle, method):
        self._handle = handle
        self._method = method

    def __getattr__(self, name):
        if name == self._method:
            def broken(*args, **kwargs):
                raise OSError(f"simulated {name} failure")
            return broken
        return getattr(self._handle, name)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._handle.close()
        return False


@pytest.fixture
def faulty_open():
    """Build an ``open`` replacement that breaks one file by name.

    ``method`` is either a file method to break (``"readinto"``, ``"write"``)
    or ``"open"`` to make opening the file itself fail.
    """
    def build(file_name, method):
        def fake_open(path, *args, **kwargs):
            if pathlib.Path(path).name == file_name:
                if method == "open":
                    raise PermissionError(f"simulated open failure: {path}")
                return _FaultyFile(_real_open(path, *args, **kwargs), method)
            return _real_open(path, *args, **kwargs)
        return fake_open
    return build
