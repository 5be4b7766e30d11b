"""Dominio OCPI del lado EMSP.

- `models`: versiones, endpoints y tokens.
- `commands`: comandos salientes, sus respuestas y `PendingCommand`.
- `envelope`: `ResponseEnvelope`, la forma común de toda respuesta.
- `errors`: excepciones propias del cliente.

Nada aquí depende de HTTP ni de la CLI.
"""
