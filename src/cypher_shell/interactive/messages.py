from ..config import ConnectionConfig

EXIT_MESSAGE = "\nBye!"
EXITING_MESSAGE = "Exiting. Bye bye."
INTERRUPTED_MESSAGE = (
    "Interrupted (Note that Cypher queries must end with a semicolon. "
    "Type :exit to exit the shell.)"
)


def welcome_message(connection_config: ConnectionConfig, server_version: str) -> str:
    version = f" {server_version}" if server_version else ""
    user = (
        f" as user {connection_config.username}" if connection_config.username else ""
    )
    return (
        f"Connected to Neo4j{version} at {connection_config.driver_url}{user}.\n"
        "Type :help for a list of available commands or :exit to exit the shell.\n"
        "Note that Cypher queries must end with a semicolon."
    )
