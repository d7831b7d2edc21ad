# Routes package init
"""
GroupUp Backend - API Routes Package
====================================

Route Inventory:
    - groups.py:     POST   /api/groups               (create)
                     GET    /api/groups               (my groups)
                     POST   /api/groups/nearby        (discover)
                     POST   /api/groups/join          (join by share code)
                     GET    /api/groups/{id}          (detail)
                     PATCH  /api/groups/{id}          (extend)
                     DELETE /api/groups/{id}          (archive)
                     POST   /api/groups/{id}/join     (join)
    - files.py:      POST   /api/groups/{id}/files    (upload)
                     GET    /api/groups/{id}/files    (list)
                     GET    /uploads/{path}           (serve)
    - buildings.py:  POST   /api/buildings/nearest
                     GET    /api/buildings/{status,debug,test,bounds}
                     POST   /api/buildings/{load,reset}
    - health.py:     GET    /health

Routes stay thin: parse the request, resolve the caller and the stores
through dependencies, call one service method, return its model.
"""
