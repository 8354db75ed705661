from sandbox_env.local import LocalSandbox
from sandbox_env.spec import Sandbox

__all__ = [
    "LocalSandbox",
    "Sandbox",
]
