"""
CRUD operations module

Imports all CRUD functions from individual entity files
"""

from .chain import (
    create_chain_configuration,
    get_chain_configuration,
    list_chain_configurations,
    update_chain_configuration,
    delete_chain_configuration,
    count_chain_configurations,
    count_chains_by_user,
)

from .execution import (
    create_execution_record,
    get_execution_record,
    list_execution_records,
    execution_totals,
    list_successful_step_traces,
)

__all__ = [
    # Chain configuration
    "create_chain_configuration",
    "get_chain_configuration",
    "list_chain_configurations",
    "update_chain_configuration",
    "delete_chain_configuration",
    "count_chain_configurations",
    "count_chains_by_user",
    # Execution history
    "create_execution_record",
    "get_execution_record",
    "list_execution_records",
    "execution_totals",
    "list_successful_step_traces",
]
