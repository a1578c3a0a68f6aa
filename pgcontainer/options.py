"""Options for pgcontainer.postgres.run(), each applying one PostgresContainer setting."""
from pgcontainer import wait


def with_database(dbname: str):
    return lambda container: container.with_database(dbname)


def with_username(username: str):
    return lambda container: container.with_username(username)


def with_password(password: str):
    return lambda container: container.with_password(password)


def with_config_file(path):
    return lambda container: container.with_config_file(path)


def with_init_scripts(*paths):
    return lambda container: container.with_init_scripts(*paths)


def with_ordered_init_scripts(*paths):
    return lambda container: container.with_ordered_init_scripts(*paths)


def with_ssl_cert(ca_cert_file, cert_file, key_file):
    return lambda container: container.with_ssl_cert(ca_cert_file, cert_file, key_file)


def with_sql_driver(driver: str):
    return lambda container: container.with_sql_driver(driver)


def with_snapshot_name(name: str):
    return lambda container: container.with_snapshot_name(name)


def with_wait_strategy(*strategies: wait.WaitStrategy):
    return lambda container: container.with_wait_strategy(*strategies)


def basic_wait_strategies():
    return lambda container: container.with_basic_wait_strategies()
