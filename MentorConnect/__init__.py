"""
    __  ___           __             ______                            __
   /  |/  /__  ____  / /_____  _____/ ____/___  ____  ____  ___  _____/ /_
  / /|_/ / _ \/ __ \/ __/ __ \/ ___/ /   / __ \/ __ \/ __ \/ _ \/ ___/ __/
 / /  / /  __/ / / / /_/ /_/ / /  / /___/ /_/ / / / / / / /  __/ /__/ /_
/_/  /_/\___/_/ /_/\__/\____/_/   \____/\____/_/ /_/_/ /_/\___/\___/\__/

MentorConnect realtime relay - online presence and chat delivery for the
MentorConnect mentorship platform.
"""

__version__ = "1.0.0"
