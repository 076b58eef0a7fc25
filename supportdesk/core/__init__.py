"""Infrastructure helpers shared by services and routers."""
