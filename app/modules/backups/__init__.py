"""
Backups Module - Gestão Técnica

Exportação de dados da empresa em planilhas Excel (.xlsx).

Este módulo NÃO cria novas tabelas: lê as tabelas dos outros módulos,
sempre filtradas pelo tenant do usuário autenticado, e monta o arquivo
completo em memória antes de entregá-lo.

Funcionalidades principais:
- Backup completo (clientes, produtos, ordens de serviço, atividades, faturas)
- Movimentação diária no fuso horário de operação
- Exportação de período personalizado com seleção de tabelas

Architecture Pattern: Pipeline
- collector.py  -> consultas concorrentes por tipo de entidade
- window.py     -> janela [início, fim) de um dia ou período
- projector.py  -> registros -> linhas tipadas (sheets.py define as colunas)
- serializer.py -> linhas -> arquivo .xlsx (openpyxl)
- service.py    -> orquestra as etapas e nomeia o arquivo
- router.py     -> endpoints FastAPI
"""

from .router import router

__all__ = ["router"]
