from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_types import *  # noqa: F401,F403
from ._core_record import *  # noqa: F401,F403
from ._core_embed import *  # noqa: F401,F403
from ._core_container import *  # noqa: F401,F403
from ._core_extract import *  # noqa: F401,F403
from ._core_exports import *  # noqa: F401,F403
from ._core_naming import *  # noqa: F401,F403
from ._core_abi import *  # noqa: F401,F403
from ._core_codegen import *  # noqa: F401,F403
from ._core_project import *  # noqa: F401,F403
from ._core_orchestration import *  # noqa: F401,F403
