class AppError(Exception):
    status = 500
    message = "Erro interno"

    def __init__(self, message: str = ""):
        super().__init__(message or self.message)
        self.message = message or self.message

class ValidationError(AppError):
    status = 400
    message = "Dados inválidos"

class Unauthenticated(AppError):
    status = 401
    message = "Não autenticado"

class InvalidCredentials(AppError):
    status = 401
    message = "Usuário ou senha inválidos"

class Forbidden(AppError):
    status = 403
    message = "Acesso negado"

class NotFound(AppError):
    status = 404
    message = "Venda não encontrada"

class StorageError(AppError):
    status = 500
    message = "Falha ao acessar o arquivo de dados"

class CorruptDataError(StorageError):
    message = "Arquivo de dados corrompido"
