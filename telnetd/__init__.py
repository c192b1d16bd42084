"""telnetd: an asyncio Telnet server of an interactive command shell."""
# pylint: disable=wildcard-import,undefined-variable
from .exceptions import *       # noqa
from .terminal import *         # noqa
from .stream_writer import *    # noqa
from .stream_reader import *    # noqa
from .codec import *            # noqa
from .connection import *       # noqa
from .manager import *          # noqa
from .listener import *         # noqa
from .session import *          # noqa
from .shell import *            # noqa
from .daemon import *           # noqa
from .sync import *             # noqa
from .telopt import *           # noqa
from .accessories import get_version as __get_version

__all__ = (
    exceptions.__all__ +
    terminal.__all__ +
    stream_writer.__all__ +
    stream_reader.__all__ +
    codec.__all__ +
    connection.__all__ +
    manager.__all__ +
    listener.__all__ +
    session.__all__ +
    shell.__all__ +
    daemon.__all__ +
    sync.__all__ +
    telopt.__all__
)  # noqa

__license__ = 'ISC'
__version__ = __get_version()
