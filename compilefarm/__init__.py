from .env import Env as Env, load_env as load_env
from .errors import (
    CapacityInvariantError as CapacityInvariantError,
    ChannelError as ChannelError,
    CompileFarmError as CompileFarmError,
    DeclarationError as DeclarationError,
    DispatchRejectedError as DispatchRejectedError,
    NoCapacityError as NoCapacityError,
    RegistrationError as RegistrationError,
)
from .farm import (
    CapacityTracker as CapacityTracker,
    Dispatcher as Dispatcher,
    SessionTeardown as SessionTeardown,
    WorkerRegistry as WorkerRegistry,
)
from .models import LOCAL as LOCAL, Job as Job, Worker as Worker, WorkerState as WorkerState
from .paths import Project as Project, ProjectPaths as ProjectPaths
from .session import BuildSession as BuildSession
