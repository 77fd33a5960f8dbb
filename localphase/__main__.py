# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


import sys
from .localphase import LocalPhase


def main():
    localphase = LocalPhase()
    sys.exit(localphase.run())


if __name__ == "__main__":
    main()
