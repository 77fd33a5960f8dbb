# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>

__version__ = "0.1.0"
