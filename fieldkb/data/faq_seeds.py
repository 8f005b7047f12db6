"""Starter FAQ entries for a fresh knowledge base.

Loaded by ``python -m fieldkb.cli ingest-faqs --seeds``.  Answers are in
Portuguese, the language of the product's users.
"""

from __future__ import annotations

from fieldkb.models.kb import FaqInput

FAQ_SEEDS: list[FaqInput] = [
    # --- Clientes ---
    FaqInput(
        question="Como cadastrar um novo cliente?",
        answer=(
            "Acesse o menu \"Clientes\" e clique em \"Novo Cliente\". Informe o nome e "
            "pelo menos um contato (email ou telefone); endereço, CPF/CNPJ e observações "
            "são opcionais. Clique em \"Salvar\". Pelo assistente, basta dizer "
            "\"Criar cliente [nome]\"."
        ),
        category="Clientes",
        keywords=["cliente", "cadastrar", "novo", "criar", "adicionar"],
        priority=10,
    ),
    FaqInput(
        question="Como editar os dados de um cliente?",
        answer=(
            "Abra o cliente pela lista em \"Clientes\", clique em \"Editar\", faça as "
            "alterações e salve. O histórico do cliente registra cada mudança."
        ),
        category="Clientes",
        keywords=["cliente", "editar", "atualizar", "alterar"],
        priority=8,
    ),
    FaqInput(
        question="Como excluir um cliente?",
        answer=(
            "Nos detalhes do cliente, abra o menu de ações e escolha \"Excluir cliente\". "
            "A exclusão pode ser desfeita por 30 dias. Clientes com orçamentos ou ordens "
            "de serviço em aberto não podem ser excluídos."
        ),
        category="Clientes",
        keywords=["cliente", "excluir", "remover", "apagar"],
        priority=7,
    ),
    # --- Orçamentos ---
    FaqInput(
        question="Como criar um orçamento?",
        answer=(
            "Em \"Orçamentos\", clique em \"Novo Orçamento\", escolha o cliente, adicione "
            "itens do catálogo ou avulsos e defina descontos e validade. Salve como "
            "rascunho ou envie direto ao cliente."
        ),
        category="Orçamentos",
        keywords=["orçamento", "criar", "proposta", "cotação"],
        priority=10,
    ),
    FaqInput(
        question="Como enviar um orçamento para o cliente?",
        answer=(
            "Abra o orçamento e clique em \"Enviar\". É possível mandar por email, "
            "WhatsApp ou copiar o link público. O cliente aprova ou recusa pelo link."
        ),
        category="Orçamentos",
        keywords=["orçamento", "enviar", "email", "whatsapp", "link"],
        priority=9,
    ),
    # --- Ordens de serviço ---
    FaqInput(
        question="Como criar uma ordem de serviço (OS)?",
        answer=(
            "Em \"Ordens de Serviço\", clique em \"Nova OS\", selecione o cliente, o "
            "técnico responsável e a data. Um orçamento aprovado também pode ser "
            "convertido em OS com um clique."
        ),
        category="Ordens de Serviço",
        keywords=["ordem de serviço", "os", "criar", "agendar"],
        priority=10,
    ),
    FaqInput(
        question="Como marcar uma ordem de serviço como concluída?",
        answer=(
            "Abra a OS, preencha o checklist obrigatório, colete a assinatura do cliente "
            "se necessário e clique em \"Concluir\". A conclusão funciona também offline "
            "no aplicativo e sincroniza depois."
        ),
        category="Ordens de Serviço",
        keywords=["ordem de serviço", "os", "concluir", "finalizar"],
        priority=9,
    ),
    # --- Cobranças ---
    FaqInput(
        question="Como criar uma cobrança PIX?",
        answer=(
            "Em \"Cobranças\", clique em \"Nova Cobrança\", escolha PIX, o cliente e o "
            "valor. O QR Code e o código copia-e-cola são gerados na hora e podem ser "
            "enviados ao cliente."
        ),
        category="Cobranças",
        keywords=["cobrança", "pix", "pagamento", "qr code"],
        priority=10,
    ),
    FaqInput(
        question="Como gerar um boleto?",
        answer=(
            "Com a integração de pagamentos configurada, crie uma cobrança e escolha "
            "\"Boleto\". Informe vencimento, multa e juros; o PDF fica disponível para "
            "download e envio."
        ),
        category="Cobranças",
        keywords=["boleto", "cobrança", "pagamento", "vencimento"],
        priority=9,
    ),
    # --- Conta e problemas ---
    FaqInput(
        question="Esqueci minha senha, como recuperar?",
        answer=(
            "Na tela de login, clique em \"Esqueci minha senha\" e informe seu email. "
            "O link de redefinição vale por 1 hora; verifique também a caixa de spam."
        ),
        category="Conta",
        keywords=["senha", "esqueci", "recuperar", "login", "acesso"],
        priority=10,
    ),
    FaqInput(
        question="O que fazer se o sistema está lento?",
        answer=(
            "Atualize a página, limpe o cache do navegador e confira sua conexão. No "
            "aplicativo, verifique se há muitas alterações pendentes de sincronização. "
            "Se continuar lento, fale com o suporte informando o horário e a tela."
        ),
        category="Problemas",
        keywords=["lento", "travando", "demora", "problema", "performance"],
        priority=9,
    ),
]
