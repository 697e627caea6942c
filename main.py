"""
Main entry point for the SMC liquidity/FVG backtester
"""
from smc_fvg.cli import main

if __name__ == '__main__':
    main()
