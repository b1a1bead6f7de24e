from geoauth.server.app import FORWARDED_FOR_HEADER, ForwardAuthServer, run_server

__all__ = ["FORWARDED_FOR_HEADER", "ForwardAuthServer", "run_server"]
