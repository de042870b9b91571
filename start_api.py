"""
Start Decision Engine API Server

Run the edgeflow decision engine REST API on port 8010.
Configuration comes from the environment (and .env):
EDGEFLOW_CONFIG_PATH, EDGEFLOW_MC_SEED, EDGEFLOW_MC_TRIALS.
"""

from edgeflow.orchestrator.api import run_api


if __name__ == "__main__":
    run_api()
