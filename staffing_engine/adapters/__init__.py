"""
Adapters

Gateway implementations that talk to the remote resource service.
"""

# Importing these pulls in aiohttp; import the concrete module instead, e.g.
# from staffing_engine.adapters.resource_gateway import ResourceGateway
__all__: list[str] = []
