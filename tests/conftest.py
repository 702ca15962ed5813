import sys, pytest
from pathlib import Path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path: sys.path.insert(0, str(ROOT))
from .kernel_utils import StubKernel, make_session
from ipychan.ioloop import IOLoopWorker


@pytest.fixture
def kernel():
    k = StubKernel()
    k.start()
    try: yield k
    finally: k.stop()


@pytest.fixture
def session(): return make_session()


@pytest.fixture
def worker(session):
    w = IOLoopWorker(session)
    w.start()
    try: yield w
    finally:
        w.stop()
        w.join(timeout=2)
