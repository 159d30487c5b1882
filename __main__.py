"""
Entry point for MentorConnect application.
Runs the relay command-line interface from a source checkout.
"""

from MentorConnect.__main__ import main

if __name__ == '__main__':
    main()
